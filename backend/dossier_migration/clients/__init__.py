"""External system clients: content repository, client data and deposit offers."""
from dossier_migration.clients.alfresco_client import AlfrescoClient
from dossier_migration.clients.client_api import ClientApi, ClientData
from dossier_migration.clients.content_repository import ContentReader, ContentWriter, NodeEntry, SearchResult
from dossier_migration.clients.offer_api import OfferApi, OfferMatchResult

__all__ = [
    "AlfrescoClient",
    "ClientApi",
    "ClientData",
    "ContentReader",
    "ContentWriter",
    "NodeEntry",
    "SearchResult",
    "OfferApi",
    "OfferMatchResult",
]
