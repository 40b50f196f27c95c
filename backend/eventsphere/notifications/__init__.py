"""Transactional email rendering and delivery."""
