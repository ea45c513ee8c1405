"""
Campaign Delivery Service Routes Registry

Defines service metadata and routes exposed by the service.
"""

SERVICE_METADATA = {
    "service_name": "campaign_delivery_service",
    "version": "1.0.0",
    "tags": ['campaign', 'delivery', 'marketing', 'v1'],
    "capabilities": ['campaign_delivery', 'audience_resolution', 'usage_metering'],
}

ROUTES = [
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": "/health/ready", "methods": ["GET"], "description": "Readiness check"},
    {"path": "/health/live", "methods": ["GET"], "description": "Liveness check"},
    {"path": "/api/v1/campaign-delivery/worker/run", "methods": ["POST"], "description": "Run one worker step"},
    {"path": "/api/v1/campaign-delivery/queue", "methods": ["POST"], "description": "Queue a campaign send"},
    {"path": "/api/v1/campaign-delivery/queue/{item_id}", "methods": ["GET"], "description": "Get queue item"},
    {"path": "/api/v1/campaign-delivery/campaigns/{campaign_id}/logs", "methods": ["GET"], "description": "List delivery logs"},
]


def get_route_metadata():
    """Get route metadata for service registration"""
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join([r["path"] for r in ROUTES]),
        "api_version": "v1",
        "base_path": "/api/v1/campaign-delivery",
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "get_route_metadata"]
