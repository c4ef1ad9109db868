"""External system integrations"""
