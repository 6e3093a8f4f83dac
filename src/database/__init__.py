"""Relational store access and record types"""
from src.database.connection import DatabaseConnection
from src.database.queries import MetadataQueries
from src.database.models import Product, Protocol, PlatformMinInfo, TokenData, TokenInfo
from src.database.setup import setup_database, verify_setup

__all__ = [
    'DatabaseConnection',
    'MetadataQueries',
    'Product',
    'Protocol',
    'PlatformMinInfo',
    'TokenData',
    'TokenInfo',
    'setup_database',
    'verify_setup',
]
