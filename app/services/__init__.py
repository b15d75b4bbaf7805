"""Service layer of the recommendation engine."""
