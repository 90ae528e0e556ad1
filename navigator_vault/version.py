"""Navigator Vault Meta information.
   Navigator Vault stores user secrets as client-encrypted envelopes.
"""
__title__ = 'navigator_vault'
__description__ = (
   'Navigator Vault stores user secrets as client-encrypted envelopes '
   'that the storage tier cannot decrypt.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-vault'
