"""
                        Services Module

Business logic of the ordering core. External integrations follow the
hybrid pattern: each has a Mock (development) and a Real (production)
implementation selected by ENV_MODE.

Services:
    - catalog: read-only user / restaurant / menu lookups
    - orders: OrderStore and OrderLifecycleManager (state machine)
    - payment: gateway adapters (Mock, Stripe) and PaymentSessionCoordinator
    - notifications: push adapters (Mock, Expo) and NotificationDispatcher
"""
