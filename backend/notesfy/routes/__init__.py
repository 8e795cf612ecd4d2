# Routes package init
"""
Notesfy Backend — API Routes Package
======================================

Route Inventory:
    - accounts.py:  POST /, POST /login, POST /profileUpdate, GET /getuser/{id}
    - posts.py:     PDF upload, details, likes, delete, subject/chapter
                    browsing, GET /uploads/{path}
    - payments.py:  POST /create-order, POST /downloadPdf, POST /withdraw
    - health.py:    GET /health

Routes stay thin: read the request, call a service, shape the response.
Errors are raised as NotesfyError subclasses and rendered by the handlers
registered in main.py.
"""
