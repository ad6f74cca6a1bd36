#
# Exact text representations of binary floating point, fixed-point decimal and integer values
#
# (c) Neil Booth 2007-2021.  All rights reserved.
#

import threading
from decimal import Decimal
from enum import Enum, IntEnum
from fractions import Fraction
from struct import Struct
from typing import NamedTuple

import attr

__all__ = ('Context', 'DefaultContext', 'get_context', 'set_context', 'local_context',
           'NumericKind', 'FloatSpec', 'FloatClass', 'FloatInfo', 'ExactDecimal',
           'IntegerWidth', 'DecimalLayout', 'TextFormat',
           'FloatMode', 'IntMode', 'FloatValue', 'DecimalValue', 'IntegerValue',
           'ReprModeError',
           'ROUND_CEILING', 'ROUND_FLOOR', 'ROUND_DOWN', 'ROUND_UP',
           'ROUND_HALF_EVEN', 'ROUND_HALF_UP', 'ROUND_HALF_DOWN',
           'HalfSpec', 'SingleSpec', 'DoubleSpec', 'FLOAT_SPECS',
           'DECIMAL_MAX_SCALE', 'DECIMAL_MAX_MAGNITUDE', 'MAX_PRECISION',
           'ExactFormat', 'SignedExpFormat', 'GeneralFormat',
           'decompose', 'compose', 'float_to_bits',
           'split_decimal_point', 'exact_from_binary', 'exact_from_info', 'exact_from_layout',
           'round_ratio', 'decimal_exponent', 'scientific_parts', 'fixed_string',
           'shortest_parts', 'hex_power_string',
           'little_endian_bytes', 'negate_twos_complement', 'magnitude_bytes', 'base_digits',
           'format_integer', 'format_raw_bytes',
           'numeric_value', 'format_value', 'repr_number')


# Rounding modes
ROUND_CEILING   = 'ROUND_CEILING'       # Towards +infinity
ROUND_FLOOR     = 'ROUND_FLOOR'         # Towards -infinity
ROUND_DOWN      = 'ROUND_DOWN'          # Torwards zero
ROUND_UP        = 'ROUND_UP'            # Away from zero
ROUND_HALF_EVEN = 'ROUND_HALF_EVEN'     # To nearest with ties towards even
ROUND_HALF_DOWN = 'ROUND_HALF_DOWN'     # To nearest with ties towards zero
ROUND_HALF_UP   = 'ROUND_HALF_UP'       # To nearest with ties away from zero

ROUNDINGS = (ROUND_CEILING, ROUND_FLOOR, ROUND_DOWN, ROUND_UP,
             ROUND_HALF_EVEN, ROUND_HALF_DOWN, ROUND_HALF_UP)

# When digits are dropped from a quotient these indicate what fraction of the last kept
# digit they represented.
LF_EXACTLY_ZERO = 0           # 000000
LF_LESS_THAN_HALF = 1         # 0xxxxx  x's not all zero
LF_EXACTLY_HALF = 2           # 100000
LF_MORE_THAN_HALF = 3         # 1xxxxx  x's not all zero

# Rounded output modes fall back to exact output outside this range of precisions
MAX_PRECISION = 100

DECIMAL_MAX_SCALE = 28
DECIMAL_MAX_MAGNITUDE = (1 << 96) - 1
DECIMAL_SIGN_BIT = 0x80000000
DECIMAL_SCALE_MASK = 0x00FF0000
DECIMAL_SCALE_SHIFT = 16

HEX_DIGITS = '0123456789ABCDEF'


class ReprModeError(ValueError):
    '''Raised when a representation mode or base is not one the value can be formatted in.
    This is always a bug in the caller; nothing is retried and no partial text is
    returned.'''


class NumericKind(IntEnum):
    '''The closed set of numeric kinds that can be represented.'''
    HALF = 1
    SINGLE = 2
    DOUBLE = 3
    DECIMAL = 4
    INT8 = 5
    UINT8 = 6
    INT16 = 7
    UINT16 = 8
    INT32 = 9
    UINT32 = 10
    INT64 = 11
    UINT64 = 12
    INT128 = 13
    UINT128 = 14
    BIGINT = 15

    def is_float(self):
        return self in {NumericKind.HALF, NumericKind.SINGLE, NumericKind.DOUBLE}

    def is_decimal(self):
        return self is NumericKind.DECIMAL

    def is_integer(self):
        return not (self.is_float() or self.is_decimal())


class FloatClass(IntEnum):
    NORMAL = 0
    SUBNORMAL = 1
    ZERO = 2
    INFINITY = 3
    QNAN = 4
    SNAN = 5


class FloatMode(Enum):
    '''How to represent a binary floating point or fixed-point decimal value.'''
    # Every digit of the exact value in scientific notation
    EXACT = 'exact'
    # Rounded to a fixed number of digits after the point, with an exponent
    SCIENTIFIC = 'scientific'
    # Rounded to a fixed number of digits after the point, without an exponent
    ROUND = 'round'
    # The shortest digits that read back to the same value
    GENERAL = 'general'
    # The in-memory encoding as hexadecimal
    RAW_BYTES_HEX = 'raw_bytes_hex'
    # sign|exponent|mantissa as binary strings
    BIT_FIELD = 'bit_field'
    # Hexadecimal significand with a binary exponent
    HEX_POWER = 'hex_power'


class IntMode(Enum):
    '''How to represent an integer value.'''
    BINARY = 'binary'
    QUATERNARY = 'quaternary'
    OCTAL = 'octal'
    HEX = 'hex'
    DECIMAL = 'decimal'
    RAW_BYTES_HEX = 'raw_bytes_hex'


#
# Format tables
#

class FloatSpec(NamedTuple):
    '''An IEEE-754 binary interchange format.  Only instantiate indirectly through
    from_widths().

    The encoding is a sign bit followed by exp_bits of biased exponent and mantissa_bits of
    mantissa, the most significant bit of the mantissa distinguishing quiet from
    signalling NaNs.  Normal numbers have an implicit leading integer bit.
    '''

    kind: NumericKind
    exp_bits: int
    mantissa_bits: int

    # All a function of the values above
    total_bits: int
    mantissa_mask: int
    mantissa_msb_mask: int
    exp_mask: int
    bias: int

    # Significant digits before General output switches to an exponent
    general_precision: int
    # struct module format character for the width
    struct_code: str

    @classmethod
    def from_widths(cls, kind, exp_bits, mantissa_bits, general_precision, struct_code):
        '''Make a FloatSpec with pre-calculated masks and bias.'''
        if not all(isinstance(arg, int) for arg in (exp_bits, mantissa_bits)):
            raise TypeError('exp_bits and mantissa_bits must be integers')
        if exp_bits < 2:
            raise ValueError('exp_bits must be at least 2')
        if mantissa_bits < 2:
            raise ValueError('mantissa_bits must be at least 2')
        total_bits = 1 + exp_bits + mantissa_bits
        mantissa_mask = (1 << mantissa_bits) - 1
        mantissa_msb_mask = 1 << (mantissa_bits - 1)
        exp_mask = (1 << exp_bits) - 1
        bias = (1 << (exp_bits - 1)) - 1
        return cls(kind, exp_bits, mantissa_bits, total_bits, mantissa_mask, mantissa_msb_mask,
                   exp_mask, bias, general_precision, struct_code)

    @property
    def hex_digits(self):
        '''Hexadecimal digits needed to display an encoding.'''
        return (self.total_bits + 3) // 4

    @property
    def payload_digits(self):
        '''Hexadecimal digits needed to display a mantissa.'''
        return (self.mantissa_bits + 3) // 4

    @property
    def implicit_bit(self):
        return 1 << self.mantissa_bits

    def __repr__(self):
        return (f'FloatSpec({self.kind.name}, exp_bits={self.exp_bits}, '
                f'mantissa_bits={self.mantissa_bits})')


HalfSpec = FloatSpec.from_widths(NumericKind.HALF, 5, 10, 5, 'e')
SingleSpec = FloatSpec.from_widths(NumericKind.SINGLE, 8, 23, 7, 'f')
DoubleSpec = FloatSpec.from_widths(NumericKind.DOUBLE, 11, 52, 15, 'd')

FLOAT_SPECS = {spec.kind: spec for spec in (HalfSpec, SingleSpec, DoubleSpec)}
_float_structs = {spec.struct_code: Struct('<' + spec.struct_code) for spec in FLOAT_SPECS.values()}


class IntegerWidth:
    '''A two's-complement integer of a given byte size, either signed or unsigned.'''

    __slots__ = ('size', 'signed', 'min_int', 'max_int')

    def __init__(self, size, signed):
        if not isinstance(size, int) or isinstance(size, bool):
            raise TypeError('size must be an integer')
        if size < 1:
            raise ValueError('size must be at least 1 byte')
        self.size = size
        self.signed = bool(signed)
        bits = size * 8
        if self.signed:
            self.min_int = -(1 << (bits - 1))
            self.max_int = (1 << (bits - 1)) - 1
        else:
            self.min_int = 0
            self.max_int = (1 << bits) - 1

    @classmethod
    def for_kind(cls, kind):
        '''The width of a fixed-size integer kind.'''
        try:
            size, signed = _integer_kinds[kind]
        except KeyError:
            raise ValueError(f'{kind!r} is not a fixed-width integer kind') from None
        return cls(size, signed)

    @classmethod
    def for_value(cls, value):
        '''The width of an arbitrary-precision integer: the fewest bytes that hold its
        two's-complement representation including a sign bit.'''
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError('value must be an integer')
        magnitude = value if value >= 0 else ~value
        return cls((magnitude.bit_length() + 8) // 8, True)

    @property
    def bits(self):
        return self.size * 8

    def check(self, value):
        '''Raise if value is not an integer representable in this width.'''
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f'expected an integer, not {type(value).__name__}')
        if not self.min_int <= value <= self.max_int:
            raise ValueError(f'{value:,d} out of range for {self!r}')

    def __eq__(self, other):
        return (isinstance(other, IntegerWidth) and
                (self.size, self.signed) == (other.size, other.signed))

    def __hash__(self):
        return hash((self.size, self.signed))

    def __repr__(self):
        return f'IntegerWidth(size={self.size}, signed={self.signed})'


_integer_kinds = {
    NumericKind.INT8: (1, True),
    NumericKind.UINT8: (1, False),
    NumericKind.INT16: (2, True),
    NumericKind.UINT16: (2, False),
    NumericKind.INT32: (4, True),
    NumericKind.UINT32: (4, False),
    NumericKind.INT64: (8, True),
    NumericKind.UINT64: (8, False),
    NumericKind.INT128: (16, True),
    NumericKind.UINT128: (16, False),
}


#
# Binary floating point decomposition
#

class FloatInfo(NamedTuple):
    '''The decomposition of a binary floating point encoding.

    For all finite numbers

            value = (-1)^sign * significand * 2^real_exponent

    where significand is an integer including the implicit integer bit of normal
    numbers.  For infinities and NaNs real_exponent and significand follow the same
    formulae but have no arithmetic meaning.
    '''

    spec: FloatSpec
    bits: int
    sign: bool
    biased_exponent: int
    mantissa: int
    real_exponent: int
    significand: int
    float_class: FloatClass

    def is_finite(self):
        return self.float_class not in {FloatClass.INFINITY, FloatClass.QNAN, FloatClass.SNAN}

    def is_nan(self):
        return self.float_class in {FloatClass.QNAN, FloatClass.SNAN}

    def is_zero(self):
        return self.float_class == FloatClass.ZERO

    def is_negative(self):
        return self.sign

    def nan_payload(self):
        '''Returns the NaN payload.  Raises RuntimeError if the value is not a NaN.'''
        if not self.is_nan():
            raise RuntimeError('nan_payload called on non-NaN')
        return self.mantissa & (self.spec.mantissa_msb_mask - 1)

    def number_class(self):
        '''Return a string describing the class of the number.'''
        float_class = self.float_class
        if float_class == FloatClass.QNAN:
            return 'NaN'
        if float_class == FloatClass.SNAN:
            return 'sNaN'
        name = {
            FloatClass.NORMAL: 'Normal',
            FloatClass.SUBNORMAL: 'Subnormal',
            FloatClass.ZERO: 'Zero',
            FloatClass.INFINITY: 'Infinity',
        }[float_class]
        return ('-' if self.sign else '+') + name

    def magnitude_ratio(self):
        '''Return a pair (n, d) with n / d the absolute value of a finite number.  d is a
        power of two.'''
        if not self.is_finite():
            raise ValueError(f'{self.number_class()} has no magnitude')
        exponent = self.real_exponent
        if exponent >= 0:
            return self.significand << exponent, 1
        return self.significand, 1 << -exponent

    def as_integer_ratio(self):
        '''Return a pair (n, d) of integers that represent the floating point value as a fraction
        in lowest terms and with a positive denominator.'''
        if self.is_nan():
            raise ValueError('cannot convert a NaN to an integer ratio')
        if not self.is_finite():
            raise OverflowError('cannot convert an infinity to an integer ratio')
        if self.significand == 0:
            return (0, 1)
        exp = self.real_exponent
        significand = self.significand
        while exp < 0 and not (significand & 1):
            significand >>= 1
            exp += 1

        if exp >= 0:
            n, d = significand << exp, 1
        else:
            n, d = significand, 1 << -exp
        return (-n if self.sign else n), d

    def exp_bit_string(self):
        return f'{self.biased_exponent:0{self.spec.exp_bits}b}'

    def mantissa_bit_string(self):
        return f'{self.mantissa:0{self.spec.mantissa_bits}b}'


def decompose(bits, spec):
    '''Decode the encoding bits of the given FloatSpec and return a FloatInfo.'''
    if not isinstance(bits, int) or isinstance(bits, bool):
        raise TypeError('bits must be an integer')
    if not 0 <= bits < (1 << spec.total_bits):
        raise ValueError(f'bit pattern {bits:#x} does not fit {spec!r}')

    mantissa = bits & spec.mantissa_mask
    biased_exponent = (bits >> spec.mantissa_bits) & spec.exp_mask
    sign = bool(bits >> (spec.total_bits - 1))

    if biased_exponent == spec.exp_mask:
        if mantissa == 0:
            float_class = FloatClass.INFINITY
        elif mantissa & spec.mantissa_msb_mask:
            float_class = FloatClass.QNAN
        else:
            float_class = FloatClass.SNAN
    elif biased_exponent == 0:
        float_class = FloatClass.SUBNORMAL if mantissa else FloatClass.ZERO
    else:
        float_class = FloatClass.NORMAL

    # Subnormals and zeroes share the exponent of the smallest normal numbers but have no
    # implicit integer bit.  Subtracting mantissa_bits makes the significand an integer.
    if biased_exponent == 0:
        real_exponent = 1 - spec.bias - spec.mantissa_bits
        significand = mantissa
    else:
        real_exponent = biased_exponent - spec.bias - spec.mantissa_bits
        significand = mantissa | spec.implicit_bit

    return FloatInfo(spec, bits, sign, biased_exponent, mantissa, real_exponent, significand,
                     float_class)


def compose(sign, biased_exponent, mantissa, spec):
    '''Return the encoding bits of the given parts; the inverse of decompose().'''
    if not 0 <= biased_exponent <= spec.exp_mask:
        raise ValueError('biased exponent out of range')
    if not 0 <= mantissa <= spec.mantissa_mask:
        raise ValueError('mantissa out of range')
    sign_bit = bool(sign) << (spec.total_bits - 1)
    return sign_bit | (biased_exponent << spec.mantissa_bits) | mantissa


def float_to_bits(value, spec):
    '''Return the encoding bits of a Python float converted to the spec's width.  Conversion
    to narrower widths rounds as the host does; values too large for the width raise
    OverflowError.'''
    if not isinstance(value, float):
        raise TypeError('float_to_bits requires a float')
    raw = _float_structs[spec.struct_code].pack(value)
    return int.from_bytes(raw, 'little')


#
# Text output
#

class ExactDecimal(NamedTuple):
    '''A decimal value in scientific form: digits is a string of significant digits and
    exponent is the exponent of the leading digit, i.e. the decimal point appears exponent
    digits after the leading digit.  Zero is ('0', 0).'''

    sign: bool
    digits: str
    exponent: int

    def is_zero(self):
        return self.digits.strip('0') == ''

    def as_integer_ratio(self):
        '''Return the value as a pair (n, d) in lowest terms with a positive denominator.'''
        shift = self.exponent - (len(self.digits) - 1)
        numerator = int(self.digits)
        if self.sign:
            numerator = -numerator
        if shift >= 0:
            return numerator * 10 ** shift, 1
        fraction = Fraction(numerator, 10 ** -shift)
        return fraction.numerator, fraction.denominator

    def to_decimal(self):
        '''Return the value as an exact Decimal, preserving the sign of zero.'''
        shift = self.exponent - (len(self.digits) - 1)
        return Decimal((int(self.sign), tuple(int(digit) for digit in self.digits), shift))


@attr.s(slots=True, kw_only=True, eq=False)
class TextFormat:
    '''Controls the output of values in scientific notation and of non-finite values.'''

    # The minimum number of digits to output in the exponent.
    exp_digits = attr.ib(default=1)
    # If True non-negative exponents display a '+'.
    force_exp_sign = attr.ib(default=False)
    # If True a lone significant digit is followed by '.0'.  For example "5E1" would
    # display as "5.0E1".
    force_point = attr.ib(default=True)
    # If False zeroes are output without a sign whatever their sign bit
    signed_zero = attr.ib(default=False)
    # The character introducing the exponent
    exp_char = attr.ib(default='E')
    # The strings output for infinities
    inf = attr.ib(default='Infinity')
    neg_inf = attr.ib(default='-Infinity')
    # The string output for quiet NaNs
    qnan = attr.ib(default='Quiet NaN')
    # The string output for signalling NaNs, which are followed by their payload
    snan = attr.ib(default='Signaling NaN')

    def leading_sign(self, sign):
        return '-' if sign else ''

    def exponent_str(self, exponent):
        '''Return the formatted exponent.'''
        sign = '-' if exponent < 0 else '+' if self.force_exp_sign else ''
        main = str(abs(exponent))
        zeroes = '0' * (self.exp_digits - len(main))
        return f'{sign}{zeroes}{main}'

    def format_scientific(self, exact, force_point=None):
        '''Return {sign}{digit}.{fraction}E{exponent} for an ExactDecimal.'''
        if force_point is None:
            force_point = self.force_point
        digits = exact.digits
        sign = exact.sign and (self.signed_zero or not exact.is_zero())
        parts = [self.leading_sign(sign), digits[0]]
        if len(digits) > 1:
            parts.extend(('.', digits[1:]))
        elif force_point:
            parts.append('.0')
        parts.append(self.exp_char)
        parts.append(self.exponent_str(exact.exponent))
        return ''.join(parts)

    def format_positional(self, exact):
        '''Return the ExactDecimal without an exponent, adding leading or trailing zeroes to
        the significant digits as needed.'''
        digits = exact.digits
        parts = [self.leading_sign(exact.sign)]
        point = exact.exponent + 1
        if point <= 0:
            parts.extend(('0.', '0' * -point, digits))
        else:
            if point > len(digits):
                digits += (point - len(digits)) * '0'
            if point < len(digits):
                parts.extend((digits[:point], '.', digits[point:]))
            else:
                parts.append(digits)
        return ''.join(parts)

    def format_general(self, exact, precision):
        '''Apply the printf 'g' rule: positional output unless the exponent is less than -4
        or not less than precision.'''
        if precision > exact.exponent >= -4:
            return self.format_positional(exact)
        return self.format_scientific(exact)

    def format_non_finite(self, info):
        '''Returns the output text for infinities and NaNs.'''
        if info.float_class == FloatClass.INFINITY:
            return self.neg_inf if info.sign else self.inf
        if info.float_class == FloatClass.QNAN:
            return self.qnan
        if info.float_class == FloatClass.SNAN:
            return f'{self.snan}, Payload: 0x{info.mantissa:0{info.spec.payload_digits}X}'
        raise ValueError(f'{info.number_class()} is finite')


# Exact output: "3.1415927410125732421875E0"
ExactFormat = TextFormat()

# Explicit exponent sign with at least three digits: "3.142E+000"
SignedExpFormat = TextFormat(exp_digits=3, force_exp_sign=True)

# Shortest round-trip output; exponents as "1E+15" and "1E-05"
GeneralFormat = TextFormat(exp_digits=2, force_exp_sign=True, force_point=False)


#
# Exact conversion to decimal
#

def split_decimal_point(numerator, shift):
    '''Return (integer_part, fraction_part) digit strings of numerator / 10^shift.  The
    integer part has at least one digit and the fraction part exactly shift digits.'''
    if numerator < 0 or shift < 0:
        raise ValueError('numerator and shift must be non-negative')
    text = str(numerator).rjust(shift + 1, '0')
    point = len(text) - shift
    return text[:point].lstrip('0') or '0', text[point:]


def _normalize_parts(sign, integer_part, fraction_part):
    '''Return the ExactDecimal of a value given as positional digit strings.'''
    if integer_part != '0':
        exponent = len(integer_part) - 1
        digits = integer_part + fraction_part
    else:
        significant = fraction_part.lstrip('0')
        if not significant:
            return ExactDecimal(sign, '0', 0)
        exponent = len(significant) - len(fraction_part) - 1
        digits = significant
    return ExactDecimal(sign, digits.rstrip('0'), exponent)


def exact_from_binary(sign, significand, real_exponent):
    '''Return the ExactDecimal of (-1)^sign * significand * 2^real_exponent.

    Only integer arithmetic is used.  For negative exponents, as 2^n * 5^n = 10^n,
    multiplying by 5^n turns the division by 2^n into moving the decimal point n places.
    '''
    if significand < 0:
        raise ValueError('significand cannot be negative')
    if significand == 0:
        return ExactDecimal(sign, '0', 0)
    if real_exponent >= 0:
        numerator = significand << real_exponent
        shift = 0
    else:
        shift = -real_exponent
        numerator = significand * 5 ** shift
    return _normalize_parts(sign, *split_decimal_point(numerator, shift))


def exact_from_info(info):
    '''Return the ExactDecimal of a finite FloatInfo.'''
    if not info.is_finite():
        raise ValueError(f'{info.number_class()} has no exact decimal value')
    return exact_from_binary(info.sign, info.significand, info.real_exponent)


def exact_from_layout(layout):
    '''Return the ExactDecimal of a DecimalLayout.  No base conversion is needed.'''
    if layout.magnitude == 0:
        return ExactDecimal(layout.sign, '0', 0)
    digits = str(layout.magnitude)
    return ExactDecimal(layout.sign, digits.rstrip('0'), len(digits) - layout.scale - 1)


#
# Rounded conversion to decimal
#

def round_up(rounding, lost_fraction, sign, is_odd):
    '''Return True if, when a quotient is inexact, it should be rounded up (i.e., away from
    zero by incrementing it).

    sign is the sign of the number, and is_odd indicates if the LSB of the quotient is
    set, which is needed for ties-to-even rounding.
    '''
    if lost_fraction == LF_EXACTLY_ZERO:
        return False

    if rounding == ROUND_HALF_EVEN:
        if lost_fraction == LF_EXACTLY_HALF:
            return is_odd
        else:
            return lost_fraction == LF_MORE_THAN_HALF
    elif rounding == ROUND_CEILING:
        return not sign
    elif rounding == ROUND_FLOOR:
        return sign
    elif rounding == ROUND_DOWN:
        return False
    elif rounding == ROUND_UP:
        return True
    elif rounding == ROUND_HALF_DOWN:
        return lost_fraction == LF_MORE_THAN_HALF
    elif rounding == ROUND_HALF_UP:
        return lost_fraction != LF_LESS_THAN_HALF
    raise ValueError(f'unknown rounding mode {rounding!r}')


def round_ratio(numerator, denominator, rounding, sign):
    '''Return numerator / denominator rounded to an integer.  Both are non-negative; sign is
    the sign of the value they are the magnitude of.'''
    quotient, remainder = divmod(numerator, denominator)
    if remainder:
        twice = remainder * 2
        if twice < denominator:
            lost_fraction = LF_LESS_THAN_HALF
        elif twice == denominator:
            lost_fraction = LF_EXACTLY_HALF
        else:
            lost_fraction = LF_MORE_THAN_HALF
        if round_up(rounding, lost_fraction, sign, bool(quotient & 1)):
            quotient += 1
    elif rounding not in ROUNDINGS:
        raise ValueError(f'unknown rounding mode {rounding!r}')
    return quotient


def decimal_exponent(numerator, denominator):
    '''Return floor(log10(numerator / denominator)) for a positive ratio.'''
    if numerator <= 0 or denominator <= 0:
        raise ValueError('ratio must be positive')
    exponent = len(str(numerator)) - len(str(denominator))
    # The ratio lies in [10^(exponent - 1), 10^(exponent + 1))
    if exponent >= 0:
        if numerator < denominator * 10 ** exponent:
            exponent -= 1
    elif numerator * 10 ** -exponent < denominator:
        exponent -= 1
    return exponent


def scientific_parts(numerator, denominator, sign, precision, rounding):
    '''Return an ExactDecimal of precision + 1 significant digits, rounded, of the magnitude
    numerator / denominator.  Trailing zeroes are kept.'''
    if numerator == 0:
        return ExactDecimal(sign, '0' * (precision + 1), 0)
    exponent = decimal_exponent(numerator, denominator)
    shift = precision - exponent
    if shift >= 0:
        quotient = round_ratio(numerator * 10 ** shift, denominator, rounding, sign)
    else:
        quotient = round_ratio(numerator, denominator * 10 ** -shift, rounding, sign)
    # Rounding up 9.99... carries into a new leading digit
    if quotient == 10 ** (precision + 1):
        quotient //= 10
        exponent += 1
    return ExactDecimal(sign, str(quotient), exponent)


def fixed_string(numerator, denominator, sign, precision, rounding):
    '''Return the magnitude numerator / denominator rounded to precision digits after the
    decimal point, as text.'''
    quotient = round_ratio(numerator * 10 ** precision, denominator, rounding, sign)
    text = str(quotient).rjust(precision + 1, '0')
    if precision:
        text = f'{text[:-precision]}.{text[-precision:]}'
    return ('-' if sign else '') + text


def shortest_parts(info):
    '''Returns the ExactDecimal of the shortest digit string that reads back, with
    round-to-nearest, as the finite value of info.

    See "How to Print Floating-Point Numbers Accurately" by Steele and White, in
    particular Table 3.  This is an optimized implementation of their algorithm.
    '''
    if not info.is_finite():
        raise ValueError('value must be finite')
    if info.is_zero():
        return ExactDecimal(info.sign, '0', 0)

    e_p = info.real_exponent
    R = info.significand << max(0, e_p)
    M = 1 << max(0, e_p)
    S = 1 << max(0, -e_p)

    # This loop is for negative exponents H. It scales R until divmod() delivers the
    # first significant digit.
    exponent = -1
    while R * 10 < S:
        exponent -= 1
        R *= 10
        M *= 10

    # This loop is for positive exponents H.  It scales S until digits can be reliably
    # delivered.
    while 2 * R + M >= 2 * S:
        S *= 10
        exponent += 1

    # Now the arithmetic value is R / S.  M is the value of one high-ulp, and hence is
    # always scaled alongside the significand remainder R.  A low-ulp is almost always the
    # same size as a high-ulp; the exception is when our value is on an exponent boundary
    # above the subnormals in which case a low-ulp is half the size of a high-ulp.  When the
    # remainder R is strictly less than half a low-ulp, or when it is strictly greater than
    # S less half a high-ulp we can stop generating digits.  The 'strictly' condition can be
    # removed if we are even, because then round-to-even will round correctly.
    on_boundary = info.significand == info.spec.implicit_bit and info.biased_exponent > 1
    low_shift = 2 if on_boundary else 1
    is_even = (info.significand & 1) == 0

    digits = bytearray()
    while True:
        U, R = divmod(R * 10, S)
        M *= 10
        low = (R << low_shift) < M + is_even
        high = 2 * (S - R) < M + is_even
        if low or high:
            break
        digits.append(U + 48)

    if low and not high:
        pass
    elif high and not low:
        U += 1
    elif 2 * R < S:
        pass
    elif 2 * R > S:
        U += 1
    else:
        U += (U & 1)
    digits.append(U + 48)

    return ExactDecimal(info.sign, digits.decode(), exponent)


def hex_power_string(info):
    '''Return the finite value formatted with a hexadecimal significand and binary exponent,
    as in "-0x1.400000P+001".'''
    if not info.is_finite():
        raise ValueError('value must be finite')
    spec = info.spec
    # Shift the mantissa left up to 3 bits so it is a whole number of hex digits
    mantissa = info.mantissa << (-spec.mantissa_bits % 4)
    if info.is_zero():
        power = 0
    else:
        power = info.real_exponent + spec.mantissa_bits
    lead = '0' if info.biased_exponent == 0 else '1'
    sign = '-' if info.sign else ''
    return f'{sign}0x{lead}.{mantissa:0{spec.payload_digits}X}P{power:+04d}'


#
# Fixed-point decimal layout
#

def _check_word(instance, attribute, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f'{attribute.name} must be an integer')
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f'{attribute.name} {value:,d} is not a 32-bit word')


def _check_scale(instance, attribute, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError('scale must be an integer')
    if not 0 <= value <= DECIMAL_MAX_SCALE:
        raise ValueError(f'scale {value} out of range 0-{DECIMAL_MAX_SCALE}')


@attr.s(slots=True, frozen=True)
class DecimalLayout:
    '''The 128-bit fixed-point decimal type: a 96-bit magnitude held in three 32-bit words, a
    power-of-ten scale and a sign.  For all values

            value = (-1)^sign * magnitude * 10^-scale

    Trailing zeroes are significant to the layout, so 1.0 and 1.00 differ in scale.
    '''

    lo = attr.ib(validator=_check_word)
    mid = attr.ib(validator=_check_word)
    hi = attr.ib(validator=_check_word)
    scale = attr.ib(default=0, validator=_check_scale)
    sign = attr.ib(default=False, converter=bool)

    @classmethod
    def from_parts(cls, sign, magnitude, scale):
        if not 0 <= magnitude <= DECIMAL_MAX_MAGNITUDE:
            raise ValueError(f'magnitude {magnitude:,d} does not fit in 96 bits')
        return cls(magnitude & 0xFFFFFFFF, (magnitude >> 32) & 0xFFFFFFFF, magnitude >> 64,
                   scale, sign)

    @classmethod
    def from_words(cls, lo, mid, hi, flags):
        '''Construct from the four 32-bit words of the encoding.  flags holds the scale in bits
        16 to 23 and the sign in bit 31; its other bits must be clear.'''
        if not isinstance(flags, int) or isinstance(flags, bool):
            raise TypeError('flags must be an integer')
        if not 0 <= flags <= 0xFFFFFFFF or flags & ~(DECIMAL_SIGN_BIT | DECIMAL_SCALE_MASK):
            raise ValueError(f'reserved bits set in flags {flags:#010x}')
        scale = (flags & DECIMAL_SCALE_MASK) >> DECIMAL_SCALE_SHIFT
        return cls(lo, mid, hi, scale, flags & DECIMAL_SIGN_BIT)

    @classmethod
    def from_int(cls, value):
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError('from_int requires an integer')
        if abs(value) > DECIMAL_MAX_MAGNITUDE:
            raise OverflowError(f'{value:,d} does not fit in 96 bits')
        return cls.from_parts(value < 0, abs(value), 0)

    @classmethod
    def from_decimal(cls, value):
        '''Return the Decimal converted to the layout.  Fractional digits beyond the maximum
        scale, or that make the magnitude exceed 96 bits, are rounded away with
        round-half-even.'''
        if not isinstance(value, Decimal):
            raise TypeError('from_decimal requires a Decimal instance')
        if not value.is_finite():
            raise ValueError(f'cannot represent {value} as a fixed-point decimal')
        sign, digits, exponent = value.as_tuple()
        magnitude = int(''.join(map(str, digits)) or '0')
        if exponent > 0:
            magnitude *= 10 ** exponent
            scale = 0
        else:
            scale = -exponent

        while scale > DECIMAL_MAX_SCALE or magnitude > DECIMAL_MAX_MAGNITUDE:
            if scale == 0:
                raise OverflowError(f'{value} is too large for a fixed-point decimal')
            drop = max(scale - DECIMAL_MAX_SCALE, 1)
            magnitude = round_ratio(magnitude, 10 ** drop, ROUND_HALF_EVEN, sign)
            scale -= drop
        return cls.from_parts(sign, magnitude, scale)

    @property
    def magnitude(self):
        return (self.hi << 64) | (self.mid << 32) | self.lo

    @property
    def flags(self):
        return (self.scale << DECIMAL_SCALE_SHIFT) | (DECIMAL_SIGN_BIT if self.sign else 0)

    def is_zero(self):
        return self.magnitude == 0

    def magnitude_ratio(self):
        '''Return a pair (n, d) with n / d the absolute value.  d is a power of ten.'''
        return self.magnitude, 10 ** self.scale

    def to_decimal(self):
        '''Return the exact value as a Decimal with the layout's scale.'''
        digits = tuple(int(digit) for digit in str(self.magnitude))
        return Decimal((int(self.sign), digits, -self.scale))

    def raw_hex(self):
        '''The encoding as hexadecimal: flags, hi, mid and lo words.'''
        return f'0x{self.flags:08X}{self.hi:08X}{self.mid:08X}{self.lo:08X}'

    def bit_field(self):
        '''sign|scale|magnitude as binary strings.'''
        return f'{int(self.sign)}|{self.scale:08b}|{self.hi:032b}{self.mid:032b}{self.lo:032b}'

    def plain_str(self):
        '''Return the value in positional notation keeping every digit of the scale.'''
        text = str(self.magnitude).rjust(self.scale + 1, '0')
        if self.scale:
            text = f'{text[:-self.scale]}.{text[-self.scale:]}'
        return ('-' if self.sign else '') + text


#
# Integer formatting
#

# Bits per digit and the marker that introduces the digits
_base_bits = {2: 1, 4: 2, 8: 3, 16: 4}
_base_markers = {2: '0b', 4: '0q', 8: '0o', 16: '0x', 10: ''}


def little_endian_bytes(value, width):
    '''Return the two's-complement encoding of value in width.size bytes, least significant
    byte first.'''
    width.check(value)
    return value.to_bytes(width.size, 'little', signed=width.signed)


def negate_twos_complement(data):
    '''Return the two's-complement negation of little-endian bytes: invert every byte then add
    one, carrying across bytes.  The negation of the minimum signed value is its magnitude
    read as unsigned.'''
    result = bytearray(~byte & 0xFF for byte in data)
    for pos in range(len(result)):
        result[pos] = (result[pos] + 1) & 0xFF
        if result[pos]:
            break
    return result


def magnitude_bytes(value, width):
    '''Return a pair (is_negative, data) where data is the little-endian magnitude of value.'''
    data = little_endian_bytes(value, width)
    if width.signed and data[-1] & 0x80:
        return True, negate_twos_complement(data)
    return False, bytearray(data)


def base_digits(data, base):
    '''Return the little-endian unsigned bytes data as digits of a power-of-two base, without
    leading zeroes.'''
    try:
        group = _base_bits[base]
    except KeyError:
        raise ReprModeError(f'unsupported base {base!r}') from None
    bits = ''.join(f'{byte:08b}' for byte in reversed(data))
    bits = bits.zfill(len(bits) + (-len(bits) % group))
    digits = ''.join(HEX_DIGITS[int(bits[pos: pos + group], 2)]
                     for pos in range(0, len(bits), group))
    return digits.lstrip('0') or '0'


def format_integer(value, width, base, padding=0):
    '''Return value formatted in base 2, 4, 8, 16 or 10 as "{sign}{marker}{digits}", the
    digits left-padded with zeroes to padding.'''
    if base not in _base_markers:
        raise ReprModeError(f'unsupported base {base!r}')
    if not isinstance(padding, int) or padding < 0:
        raise ValueError('padding must be a non-negative integer')
    if base == 10:
        width.check(value)
        is_negative, digits = value < 0, str(abs(value))
    else:
        is_negative, data = magnitude_bytes(value, width)
        digits = base_digits(data, base)
    sign = '-' if is_negative else ''
    return f'{sign}{_base_markers[base]}{digits.rjust(padding, "0")}'


def format_raw_bytes(value, width):
    '''Return every byte of the two's-complement encoding of value, most significant first,
    as hexadecimal.'''
    return '0x' + little_endian_bytes(value, width)[::-1].hex().upper()


#
# Values
#

def _check_float_kind(instance, attribute, value):
    if not isinstance(value, NumericKind) or not value.is_float():
        raise ValueError(f'{value!r} is not a binary floating point kind')


def _check_integer_kind(instance, attribute, value):
    if not isinstance(value, NumericKind) or not value.is_integer():
        raise ValueError(f'{value!r} is not an integer kind')


def _check_float_bits(instance, attribute, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError('bits must be an integer')
    if not 0 <= value < (1 << FLOAT_SPECS[instance.kind].total_bits):
        raise ValueError(f'bit pattern {value:#x} does not fit {instance.kind.name}')


def _check_integer_value(instance, attribute, value):
    instance.width.check(value)


@attr.s(slots=True, frozen=True)
class FloatValue:
    '''A binary floating point value held as its encoding.'''

    kind = attr.ib(validator=_check_float_kind)
    bits = attr.ib(validator=_check_float_bits)

    @classmethod
    def from_float(cls, value, kind=NumericKind.DOUBLE):
        '''Return the Python float converted to the kind's width.'''
        _check_float_kind(None, None, kind)
        return cls(kind, float_to_bits(value, FLOAT_SPECS[kind]))

    @property
    def spec(self):
        return FLOAT_SPECS[self.kind]

    def info(self):
        return decompose(self.bits, self.spec)


@attr.s(slots=True, frozen=True)
class DecimalValue:
    '''A fixed-point decimal value.'''

    layout = attr.ib(validator=attr.validators.instance_of(DecimalLayout))

    @classmethod
    def from_decimal(cls, value):
        return cls(DecimalLayout.from_decimal(value))

    @property
    def kind(self):
        return NumericKind.DECIMAL


@attr.s(slots=True, frozen=True)
class IntegerValue:
    '''An integer of a fixed width or, for BIGINT, of arbitrary precision.'''

    kind = attr.ib(validator=_check_integer_kind)
    value = attr.ib(validator=_check_integer_value)

    @classmethod
    def from_int(cls, value, kind=NumericKind.BIGINT):
        return cls(kind, value)

    @property
    def width(self):
        if self.kind is NumericKind.BIGINT:
            return IntegerWidth.for_value(self.value)
        return IntegerWidth.for_kind(self.kind)


def numeric_value(obj, kind=None):
    '''Return obj as a FloatValue, DecimalValue or IntegerValue.

    Python floats default to DOUBLE, Decimals to DECIMAL and integers to BIGINT.  A float can
    also become a narrower float or a DECIMAL, and an integer any kind.'''
    if isinstance(obj, (FloatValue, DecimalValue, IntegerValue)):
        if kind is not None and kind != obj.kind:
            raise TypeError(f'value is {obj.kind.name}, not {NumericKind(kind).name}')
        return obj
    if kind is not None and not isinstance(kind, NumericKind):
        raise TypeError('kind must be a NumericKind')

    # bool is an int subclass but not a number to represent
    if isinstance(obj, bool):
        raise TypeError('cannot represent a bool')
    if isinstance(obj, float):
        kind = NumericKind.DOUBLE if kind is None else kind
        if kind.is_float():
            return FloatValue.from_float(obj, kind)
        if kind.is_decimal():
            return DecimalValue.from_decimal(Decimal(obj))
    elif isinstance(obj, int):
        kind = NumericKind.BIGINT if kind is None else kind
        if kind.is_float():
            return FloatValue.from_float(float(obj), kind)
        if kind.is_decimal():
            return DecimalValue(DecimalLayout.from_int(obj))
        return IntegerValue(kind, obj)
    elif isinstance(obj, Decimal):
        if kind is None or kind.is_decimal():
            return DecimalValue.from_decimal(obj)
    else:
        raise TypeError(f'cannot represent values of type {type(obj).__name__}')
    raise TypeError(f'cannot represent a {type(obj).__name__} as {kind.name}')


#
# Mode dispatch
#

_int_mode_bases = {
    IntMode.BINARY: 2,
    IntMode.QUATERNARY: 4,
    IntMode.OCTAL: 8,
    IntMode.HEX: 16,
    IntMode.DECIMAL: 10,
}


def _format_rounded(numerator, denominator, sign, mode, precision, rounding):
    if mode is FloatMode.SCIENTIFIC:
        exact = scientific_parts(numerator, denominator, sign, precision, rounding)
        return SignedExpFormat.format_scientific(exact, force_point=False)
    return fixed_string(numerator, denominator, sign, precision, rounding)


def _format_float(value, mode, precision, rounding):
    info = value.info()
    spec = info.spec

    # These two modes show the encoding whatever it holds
    if mode is FloatMode.RAW_BYTES_HEX:
        return f'0x{info.bits:0{spec.hex_digits}X}'
    if mode is FloatMode.BIT_FIELD:
        return f'{int(info.sign)}|{info.exp_bit_string()}|{info.mantissa_bit_string()}'

    if not info.is_finite():
        return ExactFormat.format_non_finite(info)
    if mode is FloatMode.HEX_POWER:
        return hex_power_string(info)
    if mode is FloatMode.GENERAL:
        return GeneralFormat.format_general(shortest_parts(info), spec.general_precision)
    if mode in {FloatMode.SCIENTIFIC, FloatMode.ROUND} and 0 <= precision <= MAX_PRECISION:
        numerator, denominator = info.magnitude_ratio()
        return _format_rounded(numerator, denominator, info.sign, mode, precision, rounding)
    return ExactFormat.format_scientific(exact_from_info(info))


def _format_decimal(value, mode, precision, rounding):
    layout = value.layout
    if mode is FloatMode.RAW_BYTES_HEX:
        return layout.raw_hex()
    if mode is FloatMode.BIT_FIELD:
        return layout.bit_field()
    if mode is FloatMode.HEX_POWER:
        raise ReprModeError('a fixed-point decimal has no binary exponent')
    if mode is FloatMode.GENERAL:
        return layout.plain_str()
    if mode in {FloatMode.SCIENTIFIC, FloatMode.ROUND} and 0 <= precision <= MAX_PRECISION:
        numerator, denominator = layout.magnitude_ratio()
        return _format_rounded(numerator, denominator, layout.sign, mode, precision, rounding)
    return ExactFormat.format_scientific(exact_from_layout(layout))


def _format_integer(value, mode, padding):
    if mode is IntMode.RAW_BYTES_HEX:
        return format_raw_bytes(value.value, value.width)
    return format_integer(value.value, value.width, _int_mode_bases[mode], padding)


def format_value(value, mode=None, *, precision=None, width=None, context=None):
    '''Return the text representation of a FloatValue, DecimalValue or IntegerValue.

    mode is a FloatMode for floats and decimals, and an IntMode for integers.  precision
    applies to the SCIENTIFIC and ROUND float modes, width is the zero-padded digit count of
    integer modes.  Arguments that are None are taken from the context.
    '''
    context = context or get_context()
    if precision is None:
        precision = context.precision
    if width is None:
        width = context.width

    if isinstance(value, IntegerValue):
        mode = context.int_mode if mode is None else mode
        if not isinstance(mode, IntMode):
            raise ReprModeError(f'{mode!r} is not an integer representation mode')
        return _format_integer(value, mode, width)

    if isinstance(value, (FloatValue, DecimalValue)):
        mode = context.float_mode if mode is None else mode
        if not isinstance(mode, FloatMode):
            raise ReprModeError(f'{mode!r} is not a floating point representation mode')
        if not isinstance(precision, int):
            raise TypeError('precision must be an integer')
        if isinstance(value, FloatValue):
            return _format_float(value, mode, precision, context.rounding)
        return _format_decimal(value, mode, precision, context.rounding)

    raise TypeError(f'cannot format values of type {type(value).__name__}')


def repr_number(obj, mode=None, *, kind=None, precision=None, width=None, context=None):
    '''Return the text representation of a Python float, Decimal or int, or of a value
    already wrapped by numeric_value().'''
    value = numeric_value(obj, kind)
    return format_value(value, mode, precision=precision, width=width, context=context)


#
# Context
#

def _check_width(instance, attribute, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError('width must be an integer')
    if value < 0:
        raise ValueError('width cannot be negative')


@attr.s(slots=True, kw_only=True, on_setattr=attr.setters.validate)
class Context:
    '''The defaults used when formatting: representation modes, precision of rounded float
    modes, zero-padding of integer modes and the rounding mode.  Assigning an invalid
    setting raises immediately.'''

    float_mode = attr.ib(default=FloatMode.EXACT,
                         validator=attr.validators.instance_of(FloatMode))
    int_mode = attr.ib(default=IntMode.DECIMAL,
                       validator=attr.validators.instance_of(IntMode))
    precision = attr.ib(default=6, validator=attr.validators.instance_of(int))
    width = attr.ib(default=0, validator=_check_width)
    rounding = attr.ib(default=ROUND_HALF_UP, validator=attr.validators.in_(ROUNDINGS))

    def copy(self):
        '''Return a copy of the context.'''
        return attr.evolve(self)


DefaultContext = Context()
tls = threading.local()


def get_context():
    try:
        return tls.context
    except AttributeError:
        tls.context = DefaultContext.copy()
        return tls.context


def set_context(context):
    '''Sets the current thread's context to context (not a copy of it).'''
    if not isinstance(context, Context):
        raise TypeError('context must be a Context instance')
    tls.context = context


class LocalContext:
    '''A context manager that will set the current context for the active thread to a copy of
    context on entry to the with-statement and restore the previous context on exit.  If
    no context is specified a copy of the current context is taken instead.
    '''

    def __init__(self, context=None):
        self.saved_context = None
        self.context_to_set = context

    def __enter__(self):
        self.saved_context = get_context()
        context = (self.context_to_set or self.saved_context).copy()
        set_context(context)
        return context

    def __exit__(self, etype, value, traceback):
        set_context(self.saved_context)


local_context = LocalContext
