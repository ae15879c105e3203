"""HeyKaelo: a WhatsApp booking assistant for small service businesses.

Architecture Overview
=====================

Every inbound WhatsApp message (or chat-simulator message) goes through one
**dispatcher**, which picks exactly one handler per message:

1. **Owner shortcodes**: ``#today`` and ``#<id> ok|no`` from a business owner.
2. **Onboarding flow**: a scripted Q&A (``setup``) that creates a business
   profile for a fixed-location, mobile or hybrid business.
3. **Registration flow**: a scripted client intake (name, ID, medical aid,
   signature photo) started after booking with a professional business.
4. **Booking assistant**: a LangGraph state machine around Claude with two
   tools, ``check_availability`` and ``create_booking_request``.

Booking assistant graph:
    chatbot → (tool calls?) → tools → chatbot … → END
    after ``MAX_TOOL_ROUNDS`` tool rounds → fallback → END

Key Design Decisions
--------------------
- **State**: per-phone conversation state lives in the ``conversation_states``
  table (SQLAlchemy) and is always merged, never overwritten.  The LLM chat
  history is held in a bounded in-memory LRU cache with an idle TTL.
- **Owner approval**: bookings start ``pending``; approving one creates the
  Google Calendar event, schedules a reminder and notifies the customer.
- **Resilience**: the calendar client retries timeouts and 5xx with exponential
  backoff; outbound WhatsApp sends are best effort; the dispatcher always
  returns a reply.
- **Dual Interface**: FastAPI server (webhook + simulator) and a CLI chat loop.

Package Structure
-----------------
- ``heykaelo/dispatcher.py``: message routing and per-phone serialization
- ``heykaelo/agent.py``: LangGraph booking assistant
- ``heykaelo/flows/``: onboarding and registration state machines
- ``heykaelo/services/``: repositories and external API clients
- ``heykaelo/tools/``: LangChain tools bound to the model
- ``heykaelo/db/``: SQLAlchemy models and engine
- ``heykaelo/api/``: FastAPI routes and Pydantic schemas
- ``heykaelo/server.py`` / ``heykaelo/main.py``: server and CLI entry points
"""
