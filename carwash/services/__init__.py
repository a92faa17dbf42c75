"""
Use cases built on top of the storage contract.
"""
