"""Backend for the PDF transformer service.

Route handlers in server.py stay thin; the work lives here:
- pdf2htmlEX invocation (containerised) and output discovery
- asset cataloguing + URL rewriting for converted documents
- HTML -> PDF printing through a pooled headless Chromium
- TTL sweeps for catalogued assets and rendered PDFs

Security note:
Conversion ids appear in asset URLs and double as directory names, so they are
high-entropy and validated strictly. Served filenames must be bare basenames.
"""
