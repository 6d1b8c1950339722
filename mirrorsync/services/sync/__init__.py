"""
Data Sync System
Local mirror of each user's Google Calendar and Gmail, kept current by push channels and delta sync

Modules:
- store      Local Mirror Store (Supabase)
- providers  Google Calendar / Gmail API adapters
- engine     Incremental Sync Engine
- watch      Watch Subscription Manager
- ingress    Webhook Ingress Handler
- channels   channel id scheme
"""
