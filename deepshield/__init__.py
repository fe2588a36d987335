"""
deepshield – DeepShield forensic verification orchestrator.

Entry point:  deepshield.main:app  (FastAPI ASGI application)

Sub-packages:
    ai          Verdict models, Gemini classifier client, resilient invoker
    db          In-memory forensic report store
    forensic    Threat classification / alert policy
    monitor     Live sampling scheduler, batch queue, frame sources
    utils       Timers and logging helpers
"""
