"""Bearer token authentication for the client-facing API.

Sessions and tokens are issued elsewhere; this module only validates an
``Authorization: Bearer <key>`` header against DRF's token table.
"""

from rest_framework.authentication import TokenAuthentication


class BearerTokenAuthentication(TokenAuthentication):
    keyword = "Bearer"
