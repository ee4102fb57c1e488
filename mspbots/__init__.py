"""
mspbots - MSPBots channel adapter with resilient ingestion and config sync
"""

__version__ = "0.1.0"
__logo__ = "🤖"
