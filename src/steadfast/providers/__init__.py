"""Provider adapters: the submit / poll / fetch_batch contract and implementations."""

from steadfast.providers.base import TaskProvider
from steadfast.providers.http import HttpProviderSpec, HttpTaskProvider
from steadfast.providers.mock import ScriptedTaskProvider
from steadfast.providers.status_maps import APIFY_STATUS_MAP, ASSEMBLYAI_STATUS_MAP, KIE_STATUS_MAP

__all__ = [
    "TaskProvider",
    "HttpProviderSpec",
    "HttpTaskProvider",
    "ScriptedTaskProvider",
    "KIE_STATUS_MAP",
    "APIFY_STATUS_MAP",
    "ASSEMBLYAI_STATUS_MAP",
]
