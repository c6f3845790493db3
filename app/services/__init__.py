# Services package.
#
#   article_queries: builds the row and count statements for article views
#   article_rows: folds joined rows into nested article records
#   article_service: article reads and multi-statement writes
#   tag_service: lazy tag creation, tag association, cached tag list
#   user_service: registration, profiles, follow edges
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
