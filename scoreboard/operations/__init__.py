"""
Operations Layer

Business logic that composes database lookups into ledger-mutating
workflows. Each mutating operation runs in one transaction covering the
source change and its point entry regeneration.

Each operations module focuses on a specific source of points:
- PointLedger: point entry persistence and recreate-on-change
- HighScoreSessionOperations: session lifecycle and placement points
- EventMatchOperations: head-to-head and free-for-all match recording
- DiscretionaryAwardOperations: organizer-granted awards
"""
