"""Storage, messaging, metrics and configuration"""
