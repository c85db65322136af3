"""Services package - Business logic layer for the donation ledger.

Architecture:
- Services: Stateless functions organized by concern
- Transactions: session_scope() for reads, ledger_scope() for locked writes
- Exceptions: Consistent error handling via the ServiceError hierarchy
- Validation: Input validation before any database write

Service Modules:
- stock_service: Derived remaining stock and consumption history
- delivery_service: Batch and single delivery submission
- replenishment_service: Adding supply to a donation
- recipient_assignment_service: Gift recipient delivery tracking
- donation_service: Donation creation, update and deletion
- authorization: Actor and location access checks

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management, locking and database utilities
- logging_utils: Structured operation logging
- dto: Result and request data structures
"""
