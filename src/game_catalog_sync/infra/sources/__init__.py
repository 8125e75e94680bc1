"""外部カタログソースのアダプタ。"""

from .base import SourceAdapterProtocol
from .opencritic import OpenCriticAdapter, OpenCriticMatch, title_similarity
from .rawg import RawgAdapter
from .steam import SteamSpyAdapter, SteamStoreAdapter, extract_steam_appid, resolve_steam_appid

__all__ = [
    "OpenCriticAdapter",
    "OpenCriticMatch",
    "RawgAdapter",
    "SourceAdapterProtocol",
    "SteamSpyAdapter",
    "SteamStoreAdapter",
    "extract_steam_appid",
    "resolve_steam_appid",
    "title_similarity",
]
