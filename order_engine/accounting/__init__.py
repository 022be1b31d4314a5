"""
Accounting Module
"""
