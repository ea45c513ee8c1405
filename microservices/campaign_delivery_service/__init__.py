"""
Campaign Delivery Service

Marketing campaign delivery engine providing:
- Segment-based audience resolution over store customer records
- Per-recipient message personalization
- Channel dispatch (e-mail, WhatsApp) with speed-tier pacing
- Queue worker with atomic lease, retry/backoff and usage metering

Port: 8241
"""

__version__ = "1.0.0"
__service__ = "campaign_delivery_service"
