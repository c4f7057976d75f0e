"""Shared multi-company procurement core: ingestion jobs, committee decisions and audit evidence."""
