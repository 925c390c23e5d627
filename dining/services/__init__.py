"""
                        Services Module

Business logic of the order core. External dependencies have a mock
(development) and a real (staging/production) implementation.

Services:
    - orders: order state engine
    - checkout: checkout gating and payment webhooks
    - payment: Stripe and mock payment providers
    - realtime: websocket broadcast hub and message handler
    - auth: auth-service token validation
"""
