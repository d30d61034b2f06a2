"""
repositories/ - Data Access Layer
==================================
Each repository encapsulates all SQL queries for one table
(recurring_series, generated_documents).
Conditional writes (unique claims, version checks) live here so that
concurrent scheduler ticks are resolved by the database.
"""
