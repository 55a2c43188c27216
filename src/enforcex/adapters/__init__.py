"""HTTP adapters.

``enforcex.adapters.starlette`` needs the ``adapters`` extra
(``pip install enforcex[adapters]``).
"""
