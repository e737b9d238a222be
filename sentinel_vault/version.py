"""Sentinel Vault Meta information.
   Sentinel Vault keeps a user's secrets encrypted client-side and
   synchronizes them with a remote record store it never trusts.
"""
__title__ = 'sentinel_vault'
__description__ = (
   'Client-held secrets vault: local encryption and '
   'synchronization of encrypted records.'
)
__version__ = '0.1.0'
__license__ = 'Apache-2.0'
