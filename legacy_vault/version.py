"""Legacy Vault Meta information.
   Legacy Vault keeps encrypted secrets and hands their keys over to
   beneficiaries once the owner has been inactive for too long.
"""
__title__ = 'legacy_vault'
__description__ = (
   'Encrypted secret vault with inactivity-triggered testaments '
   'for designated beneficiaries.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
