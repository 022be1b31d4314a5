"""
Fulfillment Module
"""
