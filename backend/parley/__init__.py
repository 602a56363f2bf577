"""Parley - Conversation Ingestion & Reconciliation Engine"""
__version__ = "1.0.0"
