"""
WSGI config for resort_pms project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'resort_pms.settings')

application = get_wsgi_application()
