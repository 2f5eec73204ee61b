"""permitdesk.integrations — External service gateway modules.

Outbound calls to third-party services go through a gateway in this
package, never via bare `requests` calls in services or blueprints.

Current gateways:
  storage.StorageGateway — blob storage deletes for documents and photos
"""
