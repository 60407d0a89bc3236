# Services package.
#
# Each module is a set of async functions owning the business rules and
# database access for one part of the domain:
#
#   content_service    : content items: CRUD, slugs, excerpts, views, likes, cache
#   comment_service    : threaded comments with soft deletion
#   engagement_service : generic toggles and bookmarks
#   user_service       : user directory, account lifecycle and the follow graph
#   counter_service    : recounts of every cached counter
#
# Every function takes an AsyncSession first and only flushes; the
# ``get_db`` dependency commits or rolls back the request transaction.
