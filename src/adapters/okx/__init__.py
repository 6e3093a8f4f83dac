"""OKX DeFi explore API adapter"""
from src.adapters.okx.client import OkxClient
from src.adapters.okx.paginator import PaginationResult, ProductPaginator

__all__ = ['OkxClient', 'PaginationResult', 'ProductPaginator']
