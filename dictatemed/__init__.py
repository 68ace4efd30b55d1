"""DictateMED.

Backend for a clinical documentation service used by cardiologists to turn
consultation recordings and clinical documents into reviewed letters.

High-level architecture
-----------------------

The codebase is organized around a conventional web stack:

- **API layer** (``dictatemed.server``): FastAPI routers, authentication
  dependencies, exception handlers and request middleware.
- **Domain services** (``dictatemed.domains``): business rules for letters,
  style learning, referral ingestion, recordings, documents and practice
  settings.
- **Core** (``dictatemed.core``): configuration-independent infrastructure
  such as the database layer, LLM client, object storage and logging.

Core subpackages
----------------

- ``dictatemed.domains.style``:

  - Subspecialty style profiles with a subspecialty -> global -> default
    fallback.
  - Confidence-weighted prompt conditioning and learning-strength blending.
  - Edit diff analysis and the style learning pipeline.

- ``dictatemed.domains.referrals``:

  - Referral document registration, text/fast/structured extraction.
  - ``DocumentUploadQueue``: an async multi-file upload client with bounded
    concurrency and exponential backoff.

- ``dictatemed.domains.letters``:

  - Letter generation, source anchoring, clinical value extraction,
    hallucination detection and the approval workflow.
"""
