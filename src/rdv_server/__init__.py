"""rdv_server — FastAPI host for the NOVA RDV booking assistant.

Exposes :class:`rdv_assistant.DialogOrchestrator` over HTTP under
``/api/v1``.  Run with ``rdv-server`` or ``uvicorn rdv_server.app:app``.
"""
