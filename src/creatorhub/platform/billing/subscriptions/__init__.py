"""
Creator subscriptions.

Intent creation, processor verification, lifecycle commands and read-only
status views for subscriber-to-creator subscriptions.
"""
