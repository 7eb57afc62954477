"""Metered message billing: quota ledger, payment transactions and reconciliation"""
