from tutordesk.client.api import ApiClient, ApiError, ApiTimeoutError
from tutordesk.client.data_manager import DataManager

__all__ = ['ApiClient', 'ApiError', 'ApiTimeoutError', 'DataManager']
