"""
Test the option model: scopes, consume-once transfers and header normalization
"""

import pytest

from transcore import CommandBuildError, OptionScope, OptionTable, normalize_header, parse_options


class TestParseOptions:
    """Test tokenizing custom option strings"""

    def test_flags_and_values(self):
        """Test flags with and without values keep their order"""
        table = parse_options('-vf scale=1280:720 -an -metadata title="A Movie"')

        assert table.items() == [('-vf', 'scale=1280:720'), ('-an', None), ('-metadata', 'title=A Movie')]

    def test_negative_number_is_a_value(self):
        """Test that numeric values starting with '-' are not taken for flags"""
        table = parse_options('-itsoffset -1.5 -y')

        assert table.get('-itsoffset') == '-1.5'
        assert '-y' in table

    def test_empty_text(self):
        """Test empty and blank option strings"""
        assert parse_options('').is_empty()
        assert parse_options(None).is_empty()
        assert parse_options('   ').is_empty()

    def test_value_without_flag_fails(self):
        """Test that a dangling value is a build defect"""
        with pytest.raises(CommandBuildError):
            parse_options('stray -y')

    def test_unbalanced_quotes_fail(self):
        """Test that malformed quoting is a build defect"""
        with pytest.raises(CommandBuildError):
            parse_options('-metadata "title=broken')


class TestOptionScopes:
    """Test scope classification and scoped transfers"""

    @pytest.mark.parametrize("flag,expected", [
        ('-loglevel', OptionScope.GLOBAL),
        ('-y', OptionScope.GLOBAL),
        ('-headers', OptionScope.INPUT),
        ('-user_agent', OptionScope.INPUT),
        ('-reconnect', OptionScope.INPUT),
        ('-vf', OptionScope.OUTPUT),
        ('-c:v', OptionScope.OUTPUT),
    ])
    def test_classification(self, flag, expected):
        """Test known flags land in the right scope"""
        table = OptionTable([(flag, None)])
        assert table.scope_of(flag) == expected

    def test_explicit_scope_override(self):
        """Test an explicit scope wins over classification"""
        table = OptionTable()
        table.add('-custom_input', '1', scope=OptionScope.INPUT)

        out = table.transfer_input_file_options([])
        assert out == ['-custom_input', '1']

    def test_scoped_transfers(self):
        """Test globals, inputs and the remainder are transferred separately"""
        table = parse_options('-vf yadif -loglevel info -user_agent Foo -an')

        assert table.transfer_globals([]) == ['-loglevel', 'info']
        assert table.transfer_input_file_options([]) == ['-user_agent', 'Foo']
        assert table.transfer_all([]) == ['-vf', 'yadif', '-an']
        assert table.is_empty()

    def test_invalid_flag_rejected(self):
        """Test that non-flag keys are construction defects"""
        with pytest.raises(CommandBuildError):
            OptionTable().add('vf', 'scale')


class TestConsumeOnce:
    """Test transferred entries are removed"""

    def test_second_transfer_is_noop(self):
        """Test transferring -x twice does not duplicate it"""
        table = OptionTable([('-x', '1'), ('-y', None)])
        out = []

        table.transfer(['-x'], out)
        table.transfer(['-x'], out)

        assert out == ['-x', '1']
        assert '-x' not in table
        assert '-y' in table

    def test_transfer_all_after_scoped(self):
        """Test nothing is emitted twice across transfer kinds"""
        table = parse_options('-loglevel debug -vf scale=1:1')
        out = []
        table.transfer_globals(out)
        table.transfer_all(out)
        table.transfer_all(out)

        assert out == ['-loglevel', 'debug', '-vf', 'scale=1:1']

    def test_update_later_source_wins(self):
        """Test merged tables keep position but take the newer value"""
        table = parse_options('-vf a -an')
        table.update(parse_options('-vf b -sn'))

        assert table.items() == [('-vf', 'b'), ('-an', None), ('-sn', None)]


class TestHeaderNormalization:
    """Test CRLF insertion for header blobs"""

    def test_single_line_blob_is_split(self):
        """Test known fields are put on their own lines"""
        header = 'User-Agent: Foo/1.0 Cookie: a=b; c=d Referer: http://x/'

        assert normalize_header(header) == (
            'User-Agent: Foo/1.0\r\nCookie: a=b; c=d\r\nReferer: http://x/\r\n'
        )

    def test_trailing_whitespace_trimmed(self):
        """Test trailing whitespace is removed and a terminator added"""
        assert normalize_header('Range: bytes=0-   \t ') == 'Range: bytes=0-\r\n'

    def test_similar_field_names_untouched(self):
        """Test fields that only contain a known name are not split"""
        header = 'Accept-Language: en Set-Cookie: x=1'

        assert normalize_header(header) == 'Accept-Language: en Set-Cookie: x=1\r\n'

    @pytest.mark.parametrize("header", [
        'User-Agent: Foo Cookie: a=b',
        'User-Agent: Foo\r\nCookie: a=b\r\n',
        'user-agent: foo\ncontent-type: text/plain',
        'Connection: close   Content-Length: 10 Content-Type: x  ',
        'X-Custom: 1',
    ])
    def test_idempotent(self, header):
        """Test normalizing twice gives the same string"""
        once = normalize_header(header)
        assert normalize_header(once) == once

    def test_headers_option_normalized_on_add(self):
        """Test -headers values are normalized when added"""
        table = OptionTable()
        table.add('-headers', 'User-Agent: Foo Cookie: a=b')

        assert table.get('-headers') == 'User-Agent: Foo\r\nCookie: a=b\r\n'
