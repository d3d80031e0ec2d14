"""Export Notion pages and databases to static HTML or Markdown."""

from .assets import AssetFetcher, AssetSet, Downloadable
from .client import NotionClient
from .errors import ApiError, DecodeError, ExportError, PathError, TransportError, WriteError
from .ids import NotionId
from .models import ListPage, Node
from .render import HtmlRenderer
from .tree import TreeFetcher

__version__ = "0.1.0"
