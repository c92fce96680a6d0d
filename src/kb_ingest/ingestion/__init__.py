"""
Ingestion: structure recovery, chunking and chunk assembly.

This package is responsible for the CPU-bound half of the pipeline that
converts raw documents (Confluence storage XML, Markdown, plain text or
HTML) into hashed, classified chunk payloads ready for publishing.
"""
