"""Folder Vault Meta information.
   Folder Vault encrypts every file under a directory tree with one key.
"""
__title__ = 'folder_vault'
__description__ = (
   'Folder Vault bulk-encrypts and bulk-decrypts directory trees '
   'with a single rotating symmetric key.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Folder Vault contributors'
__author__ = 'Folder Vault contributors'
__license__ = 'Apache-2.0'
