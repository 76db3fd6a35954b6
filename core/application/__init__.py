"""Application layer - services, interfaces, and DTOs."""
