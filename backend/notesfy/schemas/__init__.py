# Schemas package init: request/response models grouped by resource
