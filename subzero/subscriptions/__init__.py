"""Subscriptions - models, extraction, persistence, sync, projections"""
