"""
FoodVest API - HTTP surface for USDT deposits.

Provides REST endpoints for:
- Creating and tracking payment intents
- Payment statistics
- User balances credited by settled deposits
- Operator settlement re-drive
- Health checks
"""

__version__ = "0.1.0"
