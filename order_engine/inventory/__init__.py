"""
Inventory Module
"""
