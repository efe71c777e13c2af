"""
sri_signer — electronic tax document signing and submission for the SRI (Ecuador).

Computes the 49-digit access key, signs the document with an enveloped
XAdES-BES signature from a PKCS#12 credential, submits it to the authority's
reception service and polls the authorization service.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
