"""
Neo-Certify Kernel

A transactional unit-tracking ledger for medical device supply chains:
- Lot production with sequence-backed virtual codes
- FIFO transfers between manufacturers, distributors and hospitals
- Treatment and disposal consumption
- Time-boxed treatment recall and ownership-checked shipment return
- Per-organization history projection
"""

__version__ = "0.1.0"
