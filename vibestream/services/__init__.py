"""Resolver services: caching, cool-down state, stream selection and fallback."""
