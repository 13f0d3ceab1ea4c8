"""kpi_review.integrations - External collaborator adapters.

Services never talk to third-party storage directly; they go through an
adapter in this package so the transport (filesystem, HTTP) can be swapped
by configuration and faked in tests.

Current adapters:
  evidence_store.LocalEvidenceStore / HttpEvidenceStore - supporting documents
"""
