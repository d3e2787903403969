from typing import NewType

UserOperationHash = NewType('UserOperationHash', str)
UserOperationId = NewType('UserOperationId', str)
TransactionHash = NewType('TransactionHash', str)
BlockHash = NewType('BlockHash', str)
Address = NewType('Address', str)
