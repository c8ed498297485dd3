# src/sealenv/__init__.py: sealenv package.
# A local-first encrypted secret store for dotenv documents, with the
# encryption key kept on disk or only inside a password vault.

__version__ = "0.1.0"
