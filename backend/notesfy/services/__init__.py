# Services package init
"""
Notesfy Backend — Services Layer
==================================

Service Inventory:
    - PaymentGateway (abstract): orders, contacts, fund accounts, payouts
    - RazorpayGateway: httpx client for the Razorpay REST API, with retries
      and a circuit breaker
    - signature: checkout signature computation and verification
    - FileService: upload validation, storage, resolution and cleanup
    - AccountService: registration, login, profiles
    - CatalogService: posts, likes, subjects, chapters
    - DownloadService: checkout orders and paid downloads (ledger credit)
    - PayoutService: withdrawals (ledger debit)

Services receive the request's AsyncSession as an argument and hold no
per-request state, so each is exposed as a module-level singleton.
"""
